"""AgendaCerta booking API"""
