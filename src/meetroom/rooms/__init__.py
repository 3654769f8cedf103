"""Meeting rooms -- domain schemas, record stores and the room services.

Provides the four services (lifecycle, admission, interval validation,
confirmation), the RecordStore contract with SQL and in-memory backends,
and the Notifier used to announce confirmed meeting times.
"""
