"""Request authentication.

Learn: Passwords, OAuth and email confirmation all live in the hosted
identity service. Locally we only:
1. Verify the access tokens it issues (HS256 JWTs, shared secret)
2. Carry them in cookies between the browser and our redirect routes
3. Run the PKCE half of the code flow
"""
