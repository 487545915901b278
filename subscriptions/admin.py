from django.contrib import admin

from .models import PaymentRecord, Plan, Subscription, TokenAllocation, TokenBalance


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "monthly_price", "token_allowance", "is_active")
    search_fields = ("code", "name")


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "plan", "status", "current_period_end")
    list_filter = ("status", "plan")


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "amount", "token_quantity", "status", "paid_at")
    list_filter = ("status",)


@admin.register(TokenBalance)
class TokenBalanceAdmin(admin.ModelAdmin):
    list_display = ("user", "tokens", "updated_at")


@admin.register(TokenAllocation)
class TokenAllocationAdmin(admin.ModelAdmin):
    list_display = ("payment_record", "user", "tokens", "created_at")
    readonly_fields = ("payment_record", "user", "tokens", "created_at")
