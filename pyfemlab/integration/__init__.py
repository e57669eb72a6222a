# pyfemlab.integration
