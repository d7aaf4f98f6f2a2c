from django.urls import path
from . import views

urlpatterns = [
    path("rates", views.RatesView.as_view(), name="currency-rates"),
    path("pricing", views.PricingView.as_view(), name="currency-pricing"),
    path("convert", views.ConvertView.as_view(), name="currency-convert"),
    path("supported", views.SupportedCurrenciesView.as_view(), name="currency-supported"),
    path("checkout/quote", views.CheckoutQuoteView.as_view(), name="currency-checkout-quote"),
]
