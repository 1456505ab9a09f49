"""phi-guard: access control and PHI protection core.

Session lifecycle management, role based access policy resolution and
field-level PHI encryption for a behavioural-health practice backend.
"""

__version__ = "0.1.0"
