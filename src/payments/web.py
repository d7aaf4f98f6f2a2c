from django.http import JsonResponse
from django.shortcuts import render
from django.views.decorators.http import require_GET

from .models import Transaction


@require_GET
def demo_payment(request):
    """Stand-in for the SPC payment widget while the gateway is not configured."""
    tx_id = request.GET.get('tx')
    amount = request.GET.get('amount')
    currency = request.GET.get('currency')
    if not tx_id or not amount or not currency:
        return JsonResponse({"error": "Missing payment parameters"}, status=400)

    tx = Transaction.objects.filter(tx_id=tx_id).only('status').first()
    return render(request, 'payments/demo_payment.html', {
        'tx_id': tx_id,
        'amount': amount,
        'currency': currency,
        'status': tx.get_status_display() if tx else 'Unknown',
    })
