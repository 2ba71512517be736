"""
Equipment registry application package.
"""
