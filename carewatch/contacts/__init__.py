"""
CareWatch Contacts.

Components:
- schemas: Contact, preferences, weekly availability
- selection: Eligibility, availability windows, ladder ordering
- directory: Contact CRUD and the eligibility query
"""
