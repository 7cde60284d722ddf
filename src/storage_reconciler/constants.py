"""Constants for the storage reconciler."""

import os

# Controller name stamped on structured log lines
CONTROLLER = "storage-reconciler"

# Resource Kinds
KIND_BUCKET = "Bucket"
KIND_OBJECT = "Object"
KIND_OBJECT_COPY = "ObjectCopy"
KIND_PERMISSION = "Permission"
KIND_SERVICE_ACCOUNT = "ServiceAccount"

# Object storage error codes, including the ones botocore does not name
ERR_ACCESS_DENIED = "AccessDenied"
ERR_BAD_REQUEST = "BadRequest"
ERR_BUCKET_NOT_EMPTY = "BucketNotEmpty"
ERR_NO_SUCH_BUCKET = "NoSuchBucket"
ERR_NO_SUCH_KEY = "NoSuchKey"
ERR_NO_SUCH_TAG_SET = "NoSuchTagSet"
ERR_NOT_FOUND = "NotFound"
ERR_OBJECT_LOCK_CONFIGURATION_NOT_FOUND = "ObjectLockConfigurationNotFoundError"
ERR_OPERATION_ABORTED = "OperationAborted"
ERR_SLOW_DOWN = "SlowDown"
ERR_THROTTLING = "Throttling"
ERR_TOO_MANY_REQUESTS = "TooManyRequests"

# Account API error codes
ERR_INTERNAL = "InternalError"
ERR_PERMISSION_NOT_FOUND = "PermissionNotFound"
ERR_SERVICE_ACCOUNT_NOT_FOUND = "ServiceAccountNotFound"
ERR_UNAUTHORIZED = "Unauthorized"

# HTTP status codes the classifier cares about
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503

# Object lock values
LEGAL_HOLD_ON = "ON"
LEGAL_HOLD_OFF = "OFF"
LOCK_MODES = ("GOVERNANCE", "COMPLIANCE")

# Copy directives for metadata and tags
DIRECTIVE_COPY = "COPY"
DIRECTIVE_REPLACE = "REPLACE"
COPY_DIRECTIVES = (DIRECTIVE_COPY, DIRECTIVE_REPLACE)

# Permission types and actions
PERMISSION_TYPE_ALL_BUCKETS = "all-buckets"
PERMISSION_TYPE_BUCKET_PREFIX = "bucket-prefix"
PERMISSION_TYPE_BUCKET_NAMES = "bucket-names"
PERMISSION_TYPE_POLICY = "policy"
PERMISSION_ACTIONS = ("all-operations", "read-only", "write-only")

# Bucket names are limited by the backend
MAX_BUCKET_NAME_LENGTH = 63

# Timeouts (seconds) and limits
CREATE_TIMEOUT_SECONDS = float(os.getenv("RECONCILER_CREATE_TIMEOUT_SECONDS", "300"))
READ_TIMEOUT_SECONDS = float(os.getenv("RECONCILER_READ_TIMEOUT_SECONDS", "120"))
PROPAGATION_TIMEOUT_SECONDS = float(os.getenv("RECONCILER_PROPAGATION_TIMEOUT_SECONDS", "60"))
TAG_TIMEOUT_SECONDS = float(os.getenv("RECONCILER_TAG_TIMEOUT_SECONDS", "120"))
DELETE_MAX_ITERATIONS = int(os.getenv("RECONCILER_DELETE_MAX_ITERATIONS", "10"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("RECONCILER_HTTP_TIMEOUT_SECONDS", "30"))
TOKEN_REFRESH_MARGIN_SECONDS = float(os.getenv("RECONCILER_TOKEN_REFRESH_MARGIN_SECONDS", "30"))

# Retry backoff bounds (seconds)
RETRY_MIN_DELAY_SECONDS = 0.5
RETRY_MAX_DELAY_SECONDS = 10.0

# Account API
DEFAULT_ACCOUNT_API_URL = "https://api.lyvecloud.seagate.com/v2"
USER_AGENT = "storage-reconciler/0.1.0"
