"""
Signed document downloads.

Serves PDFs from local document storage to the print partner (and ebook
customers) for URLs produced by LocalDocumentStorage.signed_url.
"""

from flask import Blueprint, abort, current_app, request, send_file

from core.exceptions import StorageError
from services.document_storage import LocalDocumentStorage
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

documents_bp = Blueprint("documents", __name__)


@documents_bp.route("/documents/<path:path>", methods=["GET"])
def download(path: str):
    storage = current_app.config["DOCUMENT_STORAGE"]
    if not isinstance(storage, LocalDocumentStorage):
        abort(404)

    if not storage.verify(path, request.args.get("expires"), request.args.get("signature")):
        logger.warning(f"Document request rejected (bad or expired signature): {path}")
        abort(403)

    try:
        target = storage.resolve(path)
    except StorageError:
        abort(404)
    if not target.is_file():
        abort(404)

    return send_file(target, mimetype="application/pdf", download_name=target.name)
