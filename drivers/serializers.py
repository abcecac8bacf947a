def serialize_driver(driver):
    data = {
        'id': driver.pk,
        'name': driver.name,
        'type': driver.type,
        'overall_rating': float(driver.overall_rating),
        'total_deliveries': driver.total_deliveries,
        'last_delivery': driver.last_delivery,
        'is_archived': driver.is_archived,
        'created_at': driver.created_at,
        'updated_at': driver.updated_at,
    }
    # Лише поля варіанту водія
    data.update(driver.profile)
    return data
