"""
Domain services for the Blog API.

Validation rules, ownership checks and password/token handling live here;
routes in app.main stay thin.
"""
