__all__ = ('Exporter',)

class Exporter(object):
    """Collect a module's public names into its ``__all__``.

    ``export`` is used as a decorator, or called directly on a name bound by
    assignment.
    """
    def __init__(self, globls):
        self.exports = globls.setdefault('__all__', [])

    def export(self, defn):
        if defn.__name__ not in self.exports:
            self.exports.append(defn.__name__)
        return defn
