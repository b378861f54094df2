"""Auth event names shared by the identity client and the reconciler."""
