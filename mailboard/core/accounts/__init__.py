"""
Accounts Module

Account configuration, credential lookup and the multi-account manager that
owns one connector per enabled account.
"""
