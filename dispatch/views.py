"""
DISPATCH App - HTTP endpoints for collaborators

- GET  /health/                                    liveness + connection counts
- GET  /api/dispatch/snapshot/                     presence + ledger snapshot (admin dashboard)
- POST /api/dispatch/deliveries/                   order intake from the storefront backend
- POST /api/dispatch/deliveries/<id>/cancel/       cancellation from order management

Views are async so they run on the same event loop as the WebSocket
consumers and see (and mutate) the dispatch state without threads.
"""

import hmac
import json
import logging

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from dispatch.ledger import REASON_NOT_FOUND
from dispatch.serializers import CancelDeliverySerializer, DeliveryIntakeSerializer
from dispatch.server import get_dispatch_server

logger = logging.getLogger(__name__)


def _authorized(request) -> bool:
    """Check the shared API token when one is configured."""
    expected = getattr(settings, 'DISPATCH_API_TOKEN', '')
    if not expected:
        return True

    header = request.headers.get('Authorization', '')
    scheme, _, presented = header.partition(' ')
    if scheme != 'Bearer' or not presented:
        return False
    return hmac.compare_digest(presented.strip(), expected)


def _unauthorized() -> JsonResponse:
    return JsonResponse({'error': 'Invalid or missing API token.'}, status=401)


def _read_json(request):
    try:
        return json.loads(request.body or b'{}')
    except ValueError:
        return None


@csrf_exempt
@require_GET
async def health_check(request):
    """
    Basic liveness check.
    Returns 200 if the dispatch process is alive.
    """
    server = get_dispatch_server()
    return JsonResponse({
        'status': 'ok',
        'service': 'aagam-dispatch',
        'running': server.running,
        'connections': server.registry.count_by_role(),
    })


@require_GET
async def snapshot(request):
    """Current rider presence and delivery states."""
    if not _authorized(request):
        return _unauthorized()
    return JsonResponse(get_dispatch_server().snapshot())


@csrf_exempt
@require_POST
async def submit_delivery(request):
    """Register a newly placed order as pending dispatch work."""
    if not _authorized(request):
        return _unauthorized()

    payload = _read_json(request)
    if payload is None:
        return JsonResponse({'error': 'Invalid JSON body.'}, status=400)

    serializer = DeliveryIntakeSerializer(data=payload)
    if not serializer.is_valid():
        return JsonResponse({'errors': serializer.errors}, status=400)

    server = get_dispatch_server()
    result = await server.submit_delivery(serializer.to_delivery(created_at=server.clock()))
    if not result:
        return JsonResponse({'error': result.reason}, status=409)

    logger.info(f"[DISPATCH] Intake of delivery {result.value.delivery_id}")
    return JsonResponse({'delivery': result.value.to_dict()}, status=201)


@csrf_exempt
@require_POST
async def cancel_delivery(request, delivery_id):
    """Cancel a pending or accepted delivery."""
    if not _authorized(request):
        return _unauthorized()

    payload = _read_json(request)
    if payload is None:
        return JsonResponse({'error': 'Invalid JSON body.'}, status=400)

    serializer = CancelDeliverySerializer(data=payload)
    if not serializer.is_valid():
        return JsonResponse({'errors': serializer.errors}, status=400)

    result = await get_dispatch_server().cancel_delivery(
        delivery_id, serializer.validated_data.get('reason', '')
    )
    if not result:
        status = 404 if result.reason == REASON_NOT_FOUND else 409
        return JsonResponse({'error': result.reason}, status=status)

    return JsonResponse({'delivery': result.value.to_dict()})
