# clinic_records/gateway/__init__.py


# Register gateway implementations here

from clinic_records.gateway.base import RecordGateway
from clinic_records.gateway.http_gateway import HttpRecordGateway
