"""Report-template engine for the medical center administration front-end.

Templates are positioned static elements and dynamic fields on a fixed canvas.
Dynamic fields carry a data mapping (``patient.name``, ``visit.doctor``, ...)
that is resolved against patient/visit/report records when a report is
generated, and the result is serialized to printable HTML (and PDF).
"""
