"""GEDCOM tree service.

FastAPI server that loads a GEDCOM (or JSON list) file into memory and serves
its records and re-encoded exports.
"""

import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gedcomtree")

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from config import get_settings
from gedcom_errors import GedcomError
from gedcom_tree import Gedcom
from gedcom_utils import (
    export_gedcom_content,
    find_record_by_id,
    get_all_records,
    parse_gedcom_content,
)

# Global state
current_gedcom: Gedcom | None = None


app = FastAPI(
    title="gedcomtree",
    description="Read, inspect and re-encode GEDCOM files",
    version="1.0.0",
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class GedcomUploadResponse(BaseModel):
    """Response after uploading a GEDCOM file."""
    message: str
    record_count: int
    warnings: list[str]
    records: list[dict]


class RecordsResponse(BaseModel):
    """Top-level record summaries."""
    records: list[dict]


def _require_gedcom() -> Gedcom:
    if current_gedcom is None:
        logger.warning("Request made without GEDCOM loaded")
        raise HTTPException(status_code=400, detail="No GEDCOM file loaded. Upload one first.")
    return current_gedcom


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "gedcom_loaded": current_gedcom is not None,
    }


@app.post("/upload-gedcom", response_model=GedcomUploadResponse)
async def upload_gedcom(file: UploadFile = File(...)):
    """Upload and parse a GEDCOM file."""
    global current_gedcom

    logger.info(f"Received GEDCOM file upload: {file.filename}")

    if not (file.filename or "").lower().endswith((".ged", ".gedcom", ".json")):
        logger.warning(f"Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="File must be a GEDCOM file (.ged, .gedcom or .json)")

    settings = get_settings()
    content = await file.read()
    logger.debug(f"Read {len(content)} bytes from file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail=f"File larger than {settings.max_upload_bytes} bytes")

    try:
        gedcom = parse_gedcom_content(content, settings.options)
    except GedcomError as e:
        logger.error(f"Failed to parse GEDCOM file: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to parse GEDCOM file: {e}")

    current_gedcom = gedcom
    records = get_all_records(gedcom)
    logger.info(f"Successfully parsed GEDCOM file with {len(records)} top-level records")
    return GedcomUploadResponse(
        message=f"Successfully parsed GEDCOM file: {file.filename}",
        record_count=len(records),
        warnings=[str(w) for w in gedcom.warnings],
        records=records,
    )


@app.get("/records", response_model=RecordsResponse)
async def get_records():
    """Get summaries of all top-level records."""
    gedcom = _require_gedcom()
    return RecordsResponse(records=get_all_records(gedcom))


@app.get("/records/{record_id}")
async def get_record(record_id: str):
    """Get one record and its sub-records in the JSON list shape."""
    gedcom = _require_gedcom()
    record = find_record_by_id(gedcom, record_id)
    if record is None:
        logger.warning(f"Record {record_id} not found")
        raise HTTPException(status_code=404, detail=f"Record with ID {record_id} not found")
    return record.to_dict()


@app.get("/export")
async def export_gedcom(fmt: str = Query(default="ged", alias="format", pattern="^(ged|json)$")):
    """Export the loaded tree as GEDCOM (UTF-8) or JSON."""
    gedcom = _require_gedcom()
    try:
        body = export_gedcom_content(gedcom, fmt)
    except GedcomError as e:
        logger.error(f"Failed to export GEDCOM: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to export GEDCOM: {e}")
    media_type = "application/json" if fmt == "json" else "text/plain; charset=utf-8"
    logger.info(f"Exported {len(body)} characters as {fmt}")
    return Response(content=body, media_type=media_type)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
