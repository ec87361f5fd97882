from pathlib import Path
import asyncio
import io
import json
import logging
import os
import tempfile
from typing import Optional

from bleak.exc import BleakError
from fastapi import FastAPI, File, Form, HTTPException, UploadFile, Request
from fastapi.responses import JSONResponse, Response
from fastapi.concurrency import run_in_threadpool
from PIL import UnidentifiedImageError

from ditherlabel.imaging.dither import Algorithm
from ditherlabel.imaging.process import (
    ConfigError,
    ProcessingOptions,
    label_canvas_size,
    to_1bit,
    to_bw,
)
from ditherlabel.printer.ble import connect_printer
from ditherlabel.printer.protocol import PrintJob
from ditherlabel.printer.transport import PrintFailed, send_print_job

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Bluetooth address of the printer; the config file may override it.
PRINTER_ADDRESS = os.getenv("DITHERLABEL_PRINTER_ADDRESS", "")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI()

# One print session at a time; the printer cannot interleave jobs.
print_lock = asyncio.Lock()


def build_options(
    cfg: dict,
    label_width_mm: Optional[float] = None,
    label_height_mm: Optional[float] = None,
    algorithm: Optional[str] = None,
    threshold: Optional[float] = None,
    brightness: Optional[float] = None,
    contrast: Optional[float] = None,
    noise: Optional[float] = None,
    rotation: Optional[float] = None,
    serpentine: Optional[bool] = None,
    gamma: Optional[float] = None,
    clahe_clip_limit: Optional[float] = None,
    blur_sigma: Optional[float] = None,
    unsharp_amount: Optional[float] = None,
    clahe_tile_size: Optional[int] = None,
    unsharp_radius: Optional[float] = None,
    scaling_method: Optional[str] = None,
    edge_aware: Optional[bool] = None,
    hardware_cleanup: Optional[bool] = None,
    offset_x: int = 0,
    offset_y: int = 0,
) -> ProcessingOptions:
    """Merge request fields over configured defaults and validate them.

    Enhancement stages are switched on by supplying their parameter (e.g. a
    ``gamma`` value turns on gamma correction).
    """
    width_mm = label_width_mm if label_width_mm is not None else cfg["label_width_mm"]
    height_mm = label_height_mm if label_height_mm is not None else cfg["label_height_mm"]
    options = ProcessingOptions(
        algorithm=Algorithm.parse(algorithm or cfg.get("default_algorithm")),
        threshold=threshold if threshold is not None else cfg.get("threshold", 128),
        brightness=brightness or 0,
        contrast=contrast or 0,
        noise=noise or 0,
        rotation=rotation or 0,
        serpentine=True if serpentine is None else serpentine,
        edge_aware=bool(edge_aware),
        hardware_cleanup=bool(hardware_cleanup),
        target_size=label_canvas_size(width_mm, height_mm),
        offset=(offset_x, offset_y),
    )
    if scaling_method is not None:
        options.scaling_method = scaling_method.strip().lower()
    if gamma is not None:
        options.use_gamma = True
        options.gamma = gamma
    if clahe_clip_limit is not None or clahe_tile_size is not None:
        options.use_clahe = True
        if clahe_clip_limit is not None:
            options.clahe_clip_limit = clahe_clip_limit
        if clahe_tile_size is not None:
            options.clahe_tile_size = clahe_tile_size
    if blur_sigma is not None or unsharp_amount is not None or unsharp_radius is not None:
        options.use_prefilter = True
        if blur_sigma is not None:
            options.blur_sigma = blur_sigma
        if unsharp_radius is not None:
            options.unsharp_radius = unsharp_radius
        if unsharp_amount is not None:
            options.unsharp_amount = unsharp_amount
    return options.validate()


async def read_upload(file: UploadFile) -> bytes:
    img_bytes = await file.read()
    # Simple upload size guard (10 MB)
    if len(img_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    return img_bytes


@app.post("/print")
async def print_image(
    file: UploadFile = File(...),
    label_width_mm: Optional[float] = Form(None),
    label_height_mm: Optional[float] = Form(None),
    algorithm: Optional[str] = Form(None),
    threshold: Optional[float] = Form(None),
    brightness: Optional[float] = Form(None),
    contrast: Optional[float] = Form(None),
    noise: Optional[float] = Form(None),
    rotation: Optional[float] = Form(None),
    serpentine: Optional[bool] = Form(None),
    gamma: Optional[float] = Form(None),
    clahe_clip_limit: Optional[float] = Form(None),
    blur_sigma: Optional[float] = Form(None),
    unsharp_amount: Optional[float] = Form(None),
    clahe_tile_size: Optional[int] = Form(None),
    unsharp_radius: Optional[float] = Form(None),
    scaling_method: Optional[str] = Form(None),
    edge_aware: Optional[bool] = Form(None),
    hardware_cleanup: Optional[bool] = Form(None),
    offset_x: int = Form(0),
    offset_y: int = Form(0),
) -> dict:
    try:
        cfg = load_config()
        options = build_options(
            cfg,
            label_width_mm,
            label_height_mm,
            algorithm,
            threshold,
            brightness,
            contrast,
            noise,
            rotation,
            serpentine,
            gamma,
            clahe_clip_limit,
            blur_sigma,
            unsharp_amount,
            clahe_tile_size,
            unsharp_radius,
            scaling_method,
            edge_aware,
            hardware_cleanup,
            offset_x,
            offset_y,
        )
        img_bytes = await read_upload(file)
        # Dithering is CPU-intensive, so run it in a thread pool to avoid
        # blocking the event loop.
        bw = await run_in_threadpool(to_bw, img_bytes, options)
        job = PrintJob.from_image(bw)

        if bool(cfg.get("test_mode", False)):
            # In test mode, delay to simulate print time and skip the printer.
            delay_ms = int(cfg.get("test_mode_delay_ms", 0) or 0)
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)
            return {
                "status": "ok",
                "mode": "test",
                "bytes": len(job.payload),
                "packets": job.packet_count(),
                "width_bytes": job.width_bytes,
                "rows": job.rows,
                "algorithm": options.algorithm.value,
            }

        address = cfg.get("printer_address") or PRINTER_ADDRESS
        if not address:
            raise HTTPException(status_code=503, detail="No printer configured")
        if print_lock.locked():
            raise HTTPException(status_code=409, detail="Printer busy")
        async with print_lock:
            async with connect_printer(address) as channel:
                packets = await send_print_job(
                    channel, job, write_timeout=float(cfg.get("write_timeout_s", 5.0))
                )
        return {"status": "ok", "packets": packets}
    except HTTPException as exc:
        # Propagate intended HTTP errors (e.g., 413 size limit)
        raise exc
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UnidentifiedImageError as exc:
        logger.exception("Failed to process image")
        raise HTTPException(status_code=400, detail="Invalid image file") from exc
    except PrintFailed as exc:
        logger.exception("Print session aborted")
        raise HTTPException(status_code=502, detail="Print failed") from exc
    except (BleakError, OSError, asyncio.TimeoutError) as exc:
        logger.exception("Could not reach printer")
        raise HTTPException(status_code=502, detail="Printer unavailable") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected server error")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


# ---- Dev settings and configuration helpers ----

def get_config_path() -> Path:
    # Allow tests or deployments to override the config file path.
    env_path = os.getenv("DITHERLABEL_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    # Default to user config directory to avoid repo-local side effects
    xdg = os.getenv("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / ".config"
    return base / "ditherlabel" / "config.json"


DEFAULT_CONFIG = {
    "test_mode": False,
    "test_mode_delay_ms": 0,
    "lock_controls": False,
    "label_width_mm": 40,
    "label_height_mm": 12,
    "default_algorithm": Algorithm.floyd.value,
    "threshold": 128,
    "write_timeout_s": 5.0,
    # Optional: override printer address; falls back to PRINTER_ADDRESS env.
    # "printer_address": "AA:BB:CC:DD:EE:FF",
}


def load_config() -> dict:
    path = get_config_path()
    if not path.exists():
        return DEFAULT_CONFIG.copy()
    try:
        data = json.loads(path.read_text())
        # Merge with defaults to ensure new keys are present
        merged = DEFAULT_CONFIG.copy()
        merged.update(data)
        return merged
    except Exception:  # noqa: BLE001
        logger.exception("Failed to read config; using defaults")
        return DEFAULT_CONFIG.copy()


def write_config(cfg: dict) -> None:
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix="ditherlabel_config.", suffix=".json", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w") as f:
            json.dump(cfg, f, indent=2, default=str)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def check_dev_password(request: Request) -> None:
    supplied = request.headers.get("X-Dev-Password")
    expected = os.getenv("DITHERLABEL_DEV_PASSWORD", "dev")
    if supplied is None:
        raise HTTPException(status_code=401, detail="Missing X-Dev-Password")
    if supplied != expected:
        raise HTTPException(status_code=403, detail="Invalid password")


@app.get("/api/public-config")
async def public_config() -> dict:
    cfg = load_config()
    try:
        canvas_w, canvas_h = label_canvas_size(cfg["label_width_mm"], cfg["label_height_mm"])
    except ConfigError:
        logger.exception("Configured label size is invalid")
        canvas_w = canvas_h = None
    return {
        "default_algorithm": str(cfg.get("default_algorithm", Algorithm.floyd.value)),
        "threshold": cfg.get("threshold", 128),
        "label_width_mm": cfg["label_width_mm"],
        "label_height_mm": cfg["label_height_mm"],
        "canvas": {"width": canvas_w, "height": canvas_h},
        "lock_controls": bool(cfg.get("lock_controls", False)),
        "algorithm_options": [a.value for a in Algorithm],
    }


@app.get("/api/dev/settings")
async def get_dev_settings(request: Request) -> JSONResponse:
    check_dev_password(request)
    cfg = load_config()
    # Include available options to aid the UI
    body = {
        "config": cfg,
        "algorithm_options": [a.value for a in Algorithm],
    }
    return JSONResponse(body)


def _number(payload: dict, key: str) -> float:
    val = payload[key]
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        raise HTTPException(status_code=400, detail=f"{key} must be a number")
    return val


@app.put("/api/dev/settings")
async def put_dev_settings(request: Request) -> JSONResponse:
    check_dev_password(request)
    payload = await request.json()
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    cfg = load_config()

    if "test_mode" in payload:
        cfg["test_mode"] = bool(payload["test_mode"])
    if "lock_controls" in payload:
        cfg["lock_controls"] = bool(payload["lock_controls"])
    if "default_algorithm" in payload:
        try:
            cfg["default_algorithm"] = Algorithm(payload["default_algorithm"]).value
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid default_algorithm") from exc
    if "label_width_mm" in payload or "label_height_mm" in payload:
        width = _number(payload, "label_width_mm") if "label_width_mm" in payload else cfg["label_width_mm"]
        height = _number(payload, "label_height_mm") if "label_height_mm" in payload else cfg["label_height_mm"]
        try:
            label_canvas_size(width, height)
        except ConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        cfg["label_width_mm"] = width
        cfg["label_height_mm"] = height
    if "threshold" in payload:
        val = _number(payload, "threshold")
        if not 0 <= val <= 255:
            raise HTTPException(status_code=400, detail="threshold must be between 0 and 255")
        cfg["threshold"] = val
    if "write_timeout_s" in payload:
        val = _number(payload, "write_timeout_s")
        if val <= 0:
            raise HTTPException(status_code=400, detail="write_timeout_s must be > 0")
        cfg["write_timeout_s"] = val
    if "printer_address" in payload:
        # Allow empty/None to clear override
        v = payload["printer_address"]
        if v is None or v == "":
            cfg.pop("printer_address", None)
        elif not isinstance(v, str):
            raise HTTPException(status_code=400, detail="printer_address must be string")
        else:
            cfg["printer_address"] = v
    if "test_mode_delay_ms" in payload:
        try:
            val = int(payload["test_mode_delay_ms"]) if payload["test_mode_delay_ms"] is not None else 0
        except Exception as exc:  # noqa: BLE001
            raise HTTPException(status_code=400, detail="test_mode_delay_ms must be an integer") from exc
        if val < 0:
            raise HTTPException(status_code=400, detail="test_mode_delay_ms must be >= 0")
        cfg["test_mode_delay_ms"] = val

    write_config(cfg)
    return JSONResponse({"status": "saved", "config": cfg})


@app.post("/preview")
async def preview_image(
    file: UploadFile = File(...),
    label_width_mm: Optional[float] = Form(None),
    label_height_mm: Optional[float] = Form(None),
    algorithm: Optional[str] = Form(None),
    threshold: Optional[float] = Form(None),
    brightness: Optional[float] = Form(None),
    contrast: Optional[float] = Form(None),
    noise: Optional[float] = Form(None),
    rotation: Optional[float] = Form(None),
    serpentine: Optional[bool] = Form(None),
    gamma: Optional[float] = Form(None),
    clahe_clip_limit: Optional[float] = Form(None),
    blur_sigma: Optional[float] = Form(None),
    unsharp_amount: Optional[float] = Form(None),
    clahe_tile_size: Optional[int] = Form(None),
    unsharp_radius: Optional[float] = Form(None),
    scaling_method: Optional[str] = Form(None),
    edge_aware: Optional[bool] = Form(None),
    hardware_cleanup: Optional[bool] = Form(None),
    offset_x: int = Form(0),
    offset_y: int = Form(0),
) -> Response:
    """Return the processed 1-bit PNG exactly as it would be printed."""
    try:
        cfg = load_config()
        options = build_options(
            cfg,
            label_width_mm,
            label_height_mm,
            algorithm,
            threshold,
            brightness,
            contrast,
            noise,
            rotation,
            serpentine,
            gamma,
            clahe_clip_limit,
            blur_sigma,
            unsharp_amount,
            clahe_tile_size,
            unsharp_radius,
            scaling_method,
            edge_aware,
            hardware_cleanup,
            offset_x,
            offset_y,
        )
        img_bytes = await read_upload(file)
        img = await run_in_threadpool(to_1bit, img_bytes, options)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        data = buf.getvalue()
        return Response(content=data, media_type="image/png")
    except HTTPException as exc:
        raise exc
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UnidentifiedImageError as exc:
        logger.exception("Failed to process image for preview")
        raise HTTPException(status_code=400, detail="Invalid image file") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected server error in preview")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
