from drivers.serializers import serialize_driver


def _money(value):
    return float(value) if value is not None else None


def serialize_rating(rating, with_driver=True):
    data = {
        'id': rating.pk,
        'delivery_id': rating.delivery_id,
        'driver_id': rating.driver_id,
        'punctuality': rating.punctuality,
        'professionalism': rating.professionalism,
        'delivery_quality': rating.delivery_quality,
        'communication': rating.communication,
        'safety': rating.safety,
        'policy_compliance': rating.policy_compliance,
        'fuel_efficiency': rating.fuel_efficiency,
        'overall': rating.overall,
        'comments': rating.comments,
        'created_at': rating.created_at,
    }
    if with_driver:
        data['driver'] = serialize_driver(rating.driver)
    return data


def serialize_delivery(delivery, with_ratings=True):
    data = {
        'id': delivery.pk,
        'request_id': delivery.request_id,
        'actual_pickup_at': delivery.actual_pickup_at,
        'actual_truck_count': delivery.actual_truck_count,
        'invoice_amount': _money(delivery.invoice_amount),
        'notes': delivery.notes,
        'logged_by': delivery.logged_by,
        'logged_at': delivery.logged_at,
        'updated_at': delivery.updated_at,
    }
    if with_ratings:
        data['ratings'] = [serialize_rating(rating) for rating in delivery.ratings.select_related('driver')]
    return data


def serialize_request(transport_request, detailed=False):
    data = {
        'id': transport_request.pk,
        'request_number': transport_request.request_number,
        'origin': transport_request.origin,
        'destination': transport_request.destination,
        'estimated_distance': _money(transport_request.estimated_distance),
        'pickup_at': transport_request.pickup_at,
        'truck_count': transport_request.truck_count,
        'truck_type': transport_request.truck_type,
        'load_details': transport_request.load_details,
        'special_requirements': transport_request.special_requirements,
        'estimated_cost': _money(transport_request.estimated_cost),
        'urgency_level': transport_request.urgency_level,
        'status': transport_request.status,
        'created_by': transport_request.created_by,
        'created_at': transport_request.created_at,
        'updated_at': transport_request.updated_at,
    }
    if detailed:
        delivery = getattr(transport_request, 'delivery', None)
        data['delivery'] = serialize_delivery(delivery) if delivery is not None else None
        data['performance_metrics'] = transport_request.performance_metrics()
    return data
