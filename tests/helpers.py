"""Test helpers shared across modules."""
from datetime import datetime
from zoneinfo import ZoneInfo

from botocore.exceptions import ClientError

TOKYO = ZoneInfo("Asia/Tokyo")
# 2025-10-01 is a Wednesday, 2025-10-04 a Saturday, 2025-11-24 a substitute holiday
WORKDAY = datetime(2025, 10, 1, 8, 30, tzinfo=TOKYO)
SATURDAY = datetime(2025, 10, 4, 8, 30, tzinfo=TOKYO)
HOLIDAY = datetime(2025, 11, 24, 8, 30, tzinfo=TOKYO)


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)
