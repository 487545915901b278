# payments/views.py
from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from django.conf import settings
from django.http import HttpResponseRedirect, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from .enums import MessageSource, ReconcileStatus, RejectionReason
from .repository import TransactionRepository
from .services import process_gateway_message

# What the gateway sees. Internal reasons stay in the logs and AuditLog.
REJECTION_STATUS = {
    RejectionReason.MALFORMED_MESSAGE: 400,
    RejectionReason.SIGNATURE_MISMATCH: 400,
    RejectionReason.AMOUNT_MISMATCH: 400,
    # Acknowledged so PayU stops redelivering something we will never apply.
    RejectionReason.UNKNOWN_OR_CLOSED_TRANSACTION: 202,
    RejectionReason.UNKNOWN_STATUS: 200,
}


# ---------------------------
# PayU Webhook
# ---------------------------
@method_decorator(csrf_exempt, name="dispatch")
class PayUWebhookView(View):
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):
        processed = process_gateway_message(request.POST, source=MessageSource.WEBHOOK)

        if processed.rejection is not None:
            status = REJECTION_STATUS[processed.rejection.reason]
            return JsonResponse({"ok": status != 400}, status=status)

        if processed.result.status == ReconcileStatus.SIDE_EFFECT_DEFERRED:
            # PayU retries on 5xx; our replay task will get there too.
            return JsonResponse({"ok": False}, status=503)
        return JsonResponse({"ok": True})


# ---------------------------
# PayU browser return (surl / furl)
# ---------------------------
@method_decorator(csrf_exempt, name="dispatch")
class PayUReturnView(View):
    """Target of surl/furl. Always redirects; the page shows what our records say."""

    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):
        process_gateway_message(request.POST, source=MessageSource.REDIRECT)

        txnid = (request.POST.get("txnid") or "").strip()
        txn = TransactionRepository().load_transaction(txnid)
        query = {"txnid": txn.txnid if txn else "", "state": txn.state if txn else "unknown"}
        return HttpResponseRedirect(_result_url(query))


def _result_url(params: dict[str, str]) -> str:
    """PAYMENTS_RESULT_URL with `params` merged into any query it already has."""
    parts = urlsplit(settings.PAYMENTS_RESULT_URL)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    return urlunsplit(parts._replace(query=urlencode([*query, *params.items()])))
