"""
Relay Pipelines
===============

- upload.py: validate, encrypt, store, record
- retrieval.py: verify passcode / fetch plaintext / fetch by ticket
- reaper.py: periodic purge of expired uploads
- service.py: FileRelay composition root
"""

from securerelay.core.relay.reaper import ExpiryReaper, SweepReport
from securerelay.core.relay.retrieval import DownloadReference, RetrievalPipeline, RetrievedFile
from securerelay.core.relay.service import FileRelay
from securerelay.core.relay.upload import UploadPipeline

__all__ = [
    "FileRelay",
    "UploadPipeline",
    "RetrievalPipeline",
    "DownloadReference",
    "RetrievedFile",
    "ExpiryReaper",
    "SweepReport",
]
