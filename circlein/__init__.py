"""CircleIn community amenity booking API"""
