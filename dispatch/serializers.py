"""
DISPATCH App Serializers - inbound payload validation

Used both by the WebSocket router (location payloads) and by the HTTP
intake endpoint of the order-management collaborator.
"""

from rest_framework import serializers

from .models import Delivery


class LocationSerializer(serializers.Serializer):
    """GPS fix as sent by the rider app (`location_update.location`)."""

    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    accuracy = serializers.FloatField(required=False, allow_null=True, min_value=0)
    speed = serializers.FloatField(required=False, allow_null=True)
    # Client-side capture time in epoch milliseconds
    timestamp = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class DeliveryItemSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    quantity = serializers.IntegerField(min_value=1, default=1)


class DeliveryIntakeSerializer(serializers.Serializer):
    """A newly placed order handed to dispatch as pending work."""

    id = serializers.CharField(max_length=64)
    customerName = serializers.CharField(max_length=150)
    address = serializers.CharField(max_length=500)
    customerPhone = serializers.CharField(max_length=20, required=False, allow_blank=True, default='')
    items = DeliveryItemSerializer(many=True, required=False, default=list)
    total = serializers.FloatField(min_value=0)
    distance = serializers.FloatField(min_value=0, required=False, default=0)

    def to_delivery(self, created_at: float) -> Delivery:
        data = self.validated_data
        return Delivery(
            delivery_id=data['id'],
            customer_name=data['customerName'],
            address=data['address'],
            customer_phone=data.get('customerPhone', ''),
            items=[dict(item) for item in data.get('items', [])],
            total=data['total'],
            distance_km=data.get('distance', 0),
            created_at=created_at,
        )


class CancelDeliverySerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=300, required=False, allow_blank=True, default='')


class AuthFrameSerializer(serializers.Serializer):
    """`rider_auth` / `admin_auth` frames. Ids are coerced to strings."""

    riderId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    adminId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    token = serializers.CharField(required=False, allow_blank=True, allow_null=True)
