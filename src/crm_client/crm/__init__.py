"""CRM reconciliation layer: schemas, remote and local backends, repositories, activity log."""
