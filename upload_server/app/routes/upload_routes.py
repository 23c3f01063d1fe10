from html import escape
from urllib.parse import quote

import aiofiles
import aiofiles.os
from fastapi import APIRouter, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.responses import HTMLResponse

from upload_server.logger_config import setup_logger

logger = setup_logger()

router = APIRouter()


@router.get("/")
async def index(request: Request):
    """Serve the upload page from the templates directory."""
    settings = request.app.state.settings
    template_path = settings.index_template

    try:
        await aiofiles.os.makedirs(settings.templates_dir, exist_ok=True)
        async with aiofiles.open(template_path, 'rb') as f:
            content = await f.read()
    except OSError as e:
        logger.error(f"Failed to read template file {template_path}: {str(e)}")
        raise HTTPException(status_code=500, detail="Template not found")

    return Response(content=content, media_type="text/html")


@router.post("/upload")
async def upload_file(request: Request, file: UploadFile = File(...)):
    """Store the uploaded ``file`` field in the uploads directory.

    Args:
        file: The multipart file; its filename is reduced to a basename
    """
    settings = request.app.state.settings
    storage_manager = request.app.state.storage_manager

    logger.info(f"Receiving upload request for file: {file.filename}")

    path, size = await storage_manager.save_upload(
        file.filename,
        file,
        max_bytes=settings.max_file_size,
    )

    logger.info(f"Uploaded {path.name} ({size} bytes)")
    return {"success": True, "message": f"File {path.name} uploaded successfully"}


@router.post("/delete")
async def delete_file(request: Request, filename: str = Form("")):
    """Delete a file by name; directory parts of the name are ignored."""
    storage_manager = request.app.state.storage_manager
    logger.info(f"Receiving delete request for file: {filename!r}")

    if not filename:
        raise HTTPException(status_code=400, detail="Filename is required")

    await storage_manager.delete_file(filename)
    return Response(status_code=200)


@router.get("/uploads/", response_class=HTMLResponse)
async def list_uploads(request: Request):
    """Directory index of the uploads folder, one anchor per entry."""
    storage_manager = request.app.state.storage_manager
    entries = await storage_manager.list_files()

    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', '<pre>']
    for entry in entries:
        name = entry["name"] + ("/" if entry["is_dir"] else "")
        lines.append(f'<a href="{quote(name)}">{escape(name)}</a>')
    lines.append('</pre>')

    return HTMLResponse("\n".join(lines) + "\n")
