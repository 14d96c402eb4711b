from bike_deploy.build.test_gate import TestGate, TestReport
from bike_deploy.build.publisher import ImagePublisher, content_hash

__all__ = ["TestGate", "TestReport", "ImagePublisher", "content_hash"]
