"""
PracticeSync — Schemas Package
================================

- fhir.py:     Halaxy FHIR resources (wire shapes, all fields optional)
- records.py:  Local entity values produced by the transformers
- sync.py:     Sync results and the HTTP contract
"""
