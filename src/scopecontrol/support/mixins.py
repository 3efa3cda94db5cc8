def quote(val):
    return "'" + str(val) + "'" if val is not None else "None"


class StringerMixin:
    """
    Outputs the class name and the public attributes in key sorted order.
    Attributes starting with an underscore are treated as private and omitted.
    """

    def __str__(self):
        return type(self).__name__ + self._sorted_items_string()

    def __repr__(self):
        return str(self)

    def _public_items(self):
        return sorted((k, v) for k, v in self.__dict__.items() if not k.startswith('_'))

    def _sorted_items_string(self):
        return "{" + ", ".join([("'" + str(key)) + "'" + ": " + (quote(val))
                                for key, val in self._public_items()]) + "}"


class CommonEqualityMixin(object):
    """ value equality for flat value objects: same type and same attributes. """

    def __eq__(self, other):
        return isinstance(other, self.__class__) and hasattr(other, '__dict__') \
            and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = None
