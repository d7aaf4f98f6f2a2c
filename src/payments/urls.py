from django.urls import path
from . import views, web

urlpatterns = [
    path("checkout/init", views.CheckoutInitView.as_view(), name="payments-checkout-init"),
    path("checkout/demo-webhook", views.DemoWebhookView.as_view(), name="payments-demo-webhook"),
    path("checkout/demo-payment", web.demo_payment, name="payments-demo-payment"),
    path("webhook", views.WebhookView.as_view(), name="payments-webhook"),
    path("status/<str:tx_id>", views.TransactionStatusView.as_view(), name="payments-status"),
    path("history", views.TransactionHistoryView.as_view(), name="payments-history"),
    path("test-connection", views.TestConnectionView.as_view(), name="payments-test-connection"),
]
