from django.urls import path
from .views import BalanceView, CreditTransactionListView

urlpatterns = [
    path('balance', BalanceView.as_view(), name='credits-balance'),
    path('transactions', CreditTransactionListView.as_view(), name='credits-transactions'),
]
