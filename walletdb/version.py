PACKAGE_VERSION = '0.17.1'                         # version of the client package
PACKAGE_DATE = '2019-03-04T12:00:00.000000+13:00'  # official timestamp for client package
