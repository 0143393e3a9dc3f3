import hashlib
import logging
import os
import re

from prism.errors import ObjectStoreError

logger = logging.getLogger(__name__)

DEFAULT_STATE_OBJECT = "terraform.tfstate"
DIGEST_LENGTH = 16
DIGEST_SUFFIX = re.compile(r"-[0-9a-f]{%d}$" % DIGEST_LENGTH)


def bucket_name_for(identity: str) -> str:
    """
    Per-user bucket name: lower-case, only [a-z0-9.-], 3-63 characters.

    An identity that is not already a valid name, or that already ends in a
    digest-shaped suffix, gets a digest of the raw identity appended, so
    distinct users never share a bucket.
    """
    raw = identity or ""
    name = re.sub(r"[^a-z0-9.-]", "-", raw.strip().lower()).strip(".-")
    if len(name) < 3:
        name = f"{name}-state" if name else "prism-state"
    name = name[:63].rstrip(".-")
    if name != raw or DIGEST_SUFFIX.search(name):
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
        name = f"{name[:63 - DIGEST_LENGTH - 1].rstrip('.-')}-{digest}"
    return name


class StateSynchronizer:
    """
    Keeps the workspace's Terraform state file in step with the object store.

    The store is the source of truth; the local file is a working copy that
    disappears with the workspace.
    """

    def __init__(self, store, object_name: str = DEFAULT_STATE_OBJECT, local_path: str = DEFAULT_STATE_OBJECT):
        self.store = store
        self.object_name = object_name
        self.local_path = local_path

    def state_path(self, workspace: str) -> str:
        return os.path.join(workspace, self.local_path)

    def get_or_create_bucket(self, identity: str) -> str:
        return self.store.get_or_create_bucket(bucket_name_for(identity))

    def restore(self, bucket: str, workspace: str) -> bool:
        """
        Downloads the state blob into the workspace.

        A missing blob (or any download error) is normal for a new project:
        an empty placeholder is written instead. Returns True if downloaded.
        """
        path = self.state_path(workspace)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        try:
            self.store.download(bucket, self.object_name, path)
        except ObjectStoreError as e:
            logger.info("%s not found in bucket %s, created empty file (%s)", self.object_name, bucket, e.upstream_message)
            with open(path, "wb"):
                pass
            return False
        logger.info("Downloaded %s from bucket %s", self.object_name, bucket)
        return True

    def persist(self, bucket: str, workspace: str) -> None:
        self.store.upload(bucket, self.object_name, self.state_path(workspace))
        logger.info("Uploaded updated %s to bucket %s", self.object_name, bucket)
