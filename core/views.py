from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse


def _database_check():
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        return {"ok": True}
    except DatabaseError as e:  # pragma: no cover
        return {"ok": False, "error": str(e)}


def _gateway_check():
    missing = [
        name
        for name in ("PAYU_MERCHANT_KEY", "PAYU_MERCHANT_SALT", "PAYU_BASE_URL")
        if not getattr(settings, name, "")
    ]
    return {
        "ok": not missing,
        "environment": getattr(settings, "PAYU_ENVIRONMENT", ""),
        "missing": missing,
    }


def healthz(request):
    db = _database_check()
    gateway = _gateway_check()
    ok = db["ok"] and gateway["ok"]
    return JsonResponse(
        {"status": "ok" if ok else "degraded", "database": db, "gateway": gateway},
        status=200 if ok else 503,
    )


def readyz(request):
    db = _database_check()
    return JsonResponse(
        {"status": "ok" if db["ok"] else "degraded", "database": db},
        status=200 if db["ok"] else 503,
    )
