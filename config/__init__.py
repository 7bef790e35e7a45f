# config package — authoritative source for NetSuite engine configuration.
#
# Sub-modules:
#   netsuite_config.py  — account host, endpoint paths, environment variables
#   retry_params.py     — retry policy table, batch defaults, rate-limit thresholds
#
# Credentials are never stored here; the account id and OAuth client id are
# read from the environment at call time.
