"""
Patient Image Backend - Application Package
=============================================

Stores uploaded image files for patients and keeps, per patient, the ordered
list of their stored paths.

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   ImageRecordService (Business)     │  ← record lifecycle rules
    ├──────────────────┬──────────────────┤
    │  ImageRecordStore│    BlobStore     │  ← database rows / files on disk
    └──────────────────┴──────────────────┘
"""

__version__ = "1.0.0"
