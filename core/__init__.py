"""core/ -- Kernel shared by every authcore package: config, clock, error taxonomy.

Layer rule: core/ imports only stdlib + third-party libraries. It never
imports from auth/.
"""
