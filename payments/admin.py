from django.contrib import admin

from .models import AuditLog, IdempotencyRecord, Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("txnid", "payment_record_id", "amount", "state", "needs_manual_review", "created_at")
    search_fields = ("txnid", "gateway_txn_id", "email")
    list_filter = ("state", "needs_manual_review")
    readonly_fields = ("request_hash", "raw_response", "replay_payload")


@admin.register(IdempotencyRecord)
class IdempotencyRecordAdmin(admin.ModelAdmin):
    list_display = ("txnid", "gateway_txn_id", "status_code", "applied_at")
    search_fields = ("txnid", "gateway_txn_id")

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("event", "txnid", "transaction", "request_id", "created_at")
    search_fields = ("event", "txnid", "request_id")
    list_filter = ("event",)
