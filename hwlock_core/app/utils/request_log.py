# app/utils/request_log.py
from fastapi import Request
from datetime import datetime
import logging
import json

logger = logging.getLogger("hwlock.requests")


async def log_requests(request: Request, call_next):
    """Log one JSON line per request with timing"""
    start_time = datetime.utcnow()

    path = request.url.path
    method = request.method
    client_ip = request.client.host if request.client else None

    status_code = 500
    error_detail = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error_detail = str(e)
        raise
    finally:
        duration = (datetime.utcnow() - start_time).total_seconds()

        log_data = {
            "timestamp": start_time.isoformat(),
            "path": path,
            "method": method,
            "status_code": status_code,
            "duration": f"{duration:.3f}s",
            "client_ip": client_ip
        }
        if error_detail:
            log_data["error"] = error_detail

        logger.info(json.dumps(log_data))
