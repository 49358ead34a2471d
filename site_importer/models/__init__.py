"""Database models."""
from site_importer.models.scratch_payload import ScratchPayload
from site_importer.models.site import Site
from site_importer.models.upload_job import JobStatus, UploadJob
from site_importer.models.webhook import Webhook

__all__ = ["JobStatus", "ScratchPayload", "Site", "UploadJob", "Webhook"]
