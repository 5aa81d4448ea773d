from django.contrib import admin
from .models import Order

@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("gateway_order_id", "status", "amount", "currency", "payment_id", "created_at", "paid_at")
    search_fields = ("gateway_order_id", "payment_id", "receipt")
    list_filter = ("status", "currency", "created_at")
    readonly_fields = (
        "gateway_order_id", "receipt", "amount", "currency", "payment_id", "signature",
        "raw_resp", "created_at", "paid_at", "updated_at",
    )
