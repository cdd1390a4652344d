"""HTTP routers for the Prescription Matching API."""
