"""
Patient Image Backend - Services Package
==========================================

    blob_store.py            - image files on local disk (write, delete, resolve)
    record_store.py          - image records in the database (find, create, save)
    image_record_service.py  - append / list / delete operations over both stores
"""
