"""
Core transfer engine.

The `TransferOrchestrator` drives each song through download, tagging, and
upload, bounding how many downloads run at once.
"""
