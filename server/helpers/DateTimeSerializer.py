from datetime import date, datetime
from enum import Enum

class DateTimeSerializerVisitor:
    """Visitor to turn documents read from Mongo into JSON-safe structures.

    datetimes and dates become ISO strings, enum members become their values.
    """
    def visit(self, obj):
        if isinstance(obj, dict):
            return {key: self.visit(value) for key, value in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self.visit(item) for item in obj]
        elif isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            return obj.value
        return obj
