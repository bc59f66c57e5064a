"""docintel: grounded document Q&A and shipment extraction over a hybrid index."""
