"""pat/ -- Personal access token lifecycle (create, list, delete).

Every PAT belongs to a machine user whose username is the owning human
user's id. The machine user is created on first use.

Layer rule: pat/ imports from idp/ only. api/ imports from pat/, not the
other way around.
"""
