TEST_REGION = "us-east-1"
TEST_ACCOUNT_ID = "123456789012"
TEST_HOST = "203.0.113.10"
TEST_REVISION = "abc123"
TEST_REPOSITORY_URI = f"{TEST_ACCOUNT_ID}.dkr.ecr.{TEST_REGION}.amazonaws.com/bike-inventory-app"
TEST_SERVICE_NAME = "bike-inventory-api"
TEST_DB_PASSWORD = "s3cretDbPassw0rd"
TEST_JWT_SECRET = "jwt-secret-value-that-is-long-enough"
