from supportdesk.services.template_form import canonical_field, map_template_fields, normalize_label


class TestNormalizeLabel:
    def test_screen_prefix_and_index_removed(self):
        assert normalize_label("screen_0_Vehicle_Number_0") == "vehicle number"

    def test_double_underscore_collapses(self):
        assert normalize_label("screen_1_driver__number") == "driver number"


class TestCanonicalField:
    def test_exact_labels(self):
        assert canonical_field("screen_0_Vehicle_Number_0") == "vehicle_number"
        assert canonical_field("screen_1_driver__number") == "driver_number"
        assert canonical_field("UPI_ID") == "upi_id"

    def test_phrase_inside_longer_label(self):
        assert canonical_field("screen_2_Your_Current_Location_1") == "location"

    def test_unknown_label(self):
        assert canonical_field("screen_0_Favourite_Colour_0") is None
        assert canonical_field("") is None


class TestMapTemplateFields:
    def test_lock_open_submission(self):
        raw = {
            "screen_0_Vehicle_Number_0": " ABC123 ",
            "screen_0_Driver_Number_1": "DRV001",
            "screen_0_Location_2": "Warsaw",
            "flow_token": "unused",
        }
        assert map_template_fields("lock_open", raw) == {
            "vehicle_number": "ABC123",
            "driver_number": "DRV001",
            "location": "Warsaw",
        }

    def test_fields_outside_category_dropped(self):
        raw = {"screen_0_Vehicle_Number_0": "ABC123", "screen_0_Amount_1": "500"}
        assert map_template_fields("lock_open", raw) == {"vehicle_number": "ABC123"}

    def test_first_non_empty_value_wins(self):
        raw = {"screen_0_Vehicle_0": "", "screen_1_Vehicle_Number_0": "ABC123", "vehicle_no": "XYZ999"}
        assert map_template_fields("lock_open", raw)["vehicle_number"] == "ABC123"

    def test_fuel_keeps_fuel_type(self):
        raw = {"screen_0_Fuel_Type_0": "amount", "screen_0_Amount_1": "500"}
        mapped = map_template_fields("fuel_request", raw, "amount")
        assert mapped == {"fuel_type": "amount", "amount": "500"}
