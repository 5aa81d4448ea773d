from django.core.validators import MinValueValidator
from django.db import models


class Order(models.Model):
    CREATED = "created"
    PAID = "paid"
    STATUS = [(CREATED, "Created"), (PAID, "Paid")]

    gateway_order_id = models.CharField(max_length=64, unique=True, db_index=True)
    receipt = models.CharField(max_length=40, blank=True, default="")

    # smallest currency unit (paise, cents), as echoed by the gateway
    amount = models.PositiveBigIntegerField(validators=[MinValueValidator(1)])
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=12, choices=STATUS, default=CREATED, db_index=True)

    payment_id = models.CharField(max_length=64, blank=True, default="")
    signature = models.CharField(max_length=128, blank=True, default="")
    raw_resp = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_paid(self) -> bool:
        return self.status == self.PAID

    def as_dict(self) -> dict:
        return {
            "order_id": self.gateway_order_id,
            "record_id": str(self.pk),
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
        }

    def __str__(self):
        return f"{self.gateway_order_id} ({self.status})"
