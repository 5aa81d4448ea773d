from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("orders", views.create_order_view, name="create_order"),
    path("verify", views.verify_payment_view, name="verify_payment"),
    path("webhook", views.razorpay_webhook, name="razorpay_webhook"),
]
