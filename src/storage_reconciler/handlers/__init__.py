"""Resource reconcilers."""

from .bucket import BucketReconciler
from .lookup import BucketLookup, ObjectLookup
from .object import ObjectReconciler
from .object_copy import ObjectCopyReconciler
from .permission import PermissionReconciler
from .service_account import ServiceAccountReconciler

__all__ = [
    "BucketLookup",
    "BucketReconciler",
    "ObjectCopyReconciler",
    "ObjectLookup",
    "ObjectReconciler",
    "PermissionReconciler",
    "ServiceAccountReconciler",
]
